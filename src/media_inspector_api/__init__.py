"""Media inspection API: bounded fetch, MediaInfo analysis and ffmpeg thumbnails."""
