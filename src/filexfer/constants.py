from __future__ import annotations

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 65432
DEFAULT_CHUNK_SIZE = 4096
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_OUTPUT_DIR = "received_files"
DEFAULT_SERVE_DIR = "."

METHOD_TAG_LEN = 32
FILENAME_FIELD_LEN = 256
HEADER_FORMAT = "=%ds%dsq" % (METHOD_TAG_LEN, FILENAME_FIELD_LEN)  # method, filename, size
STATUS_FORMAT = "=i"

UPLOAD_FILE = "UploadFile"

TEXT_READ_SIZE = 1024
TEXT_OK = b"OK:"
TEXT_ERROR = b"ERROR:"
TEXT_DELIMITER = b"\n"
REASON_NOT_FOUND = "File Not Found"
REASON_INTERNAL = "Internal Server Error"

ACCEPTED = 200
COMPLETED = 201
NOT_FOUND = 404
SIZE_MISMATCH = 409
INTERNAL_ERROR = 500
