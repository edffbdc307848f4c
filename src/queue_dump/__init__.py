"""
Queue dump: drain a message queue into files on disk.

Each message carries a data source and a file name as properties; its
body (text or raw bytes) is written to OUTPUT_DIR/<data source>/<file name>
and the message is acknowledged only after the write succeeds.
"""

__version__ = "0.1.0"
