"""
Offline Subtitle Sync — Pipeline Package

Local, signal-based subtitle synchronisation:
  - audio_source: direct PCM decoding (soundfile / ffmpeg pipe)
  - vad: chunked voice activity detection
  - merger: speech segment merging and filtering
  - offset: automatic / manual offset calculation
  - applier: safe cue timestamp shifting
  - subtitles: pysubs2-backed cue loading and writing
  - pairing: batch video/subtitle pairing
  - orchestrator: per-pair state machine and batch runner
"""
