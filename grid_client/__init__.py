"""Client-side windowing and cell edit pipeline for the grid backend."""
