"""curalease REST API."""
