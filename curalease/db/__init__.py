from curalease.db.sqlite import CurationStore

__all__ = ["CurationStore"]
