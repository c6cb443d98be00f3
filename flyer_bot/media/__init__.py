"""
Flyer media ingestion.

- models.py: submission and per-run records
- intake.py: which inbound messages are flyers
- storage.py: durable copy of the original image
- pipeline.py: image → model → validated payload → database
"""
