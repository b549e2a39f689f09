"""Multi-track geospatial replay: synchronization, metric coloring and playback."""
