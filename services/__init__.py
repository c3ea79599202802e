"""
Visualization Services

- generation: text, image and speech generators plus the orchestrator
- video_generation: video job submission and bounded polling
- persistence: asset uploads and visualization records
- pipeline: wiring of the above
"""
