"""Adapters for external collaborators: OCR, 3x-UI panels, Telegram."""
