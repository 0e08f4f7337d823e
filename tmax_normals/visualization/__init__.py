"""Map, frame and choropleth rendering."""

from .maps import (
    render_day_map,
    render_animation_frames,
    plot_pixel_series,
    render_zonal_choropleth,
)

__all__ = [
    'render_day_map',
    'render_animation_frames',
    'plot_pixel_series',
    'render_zonal_choropleth',
]
