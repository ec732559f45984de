# Formats
FORMAT_TEXT = "text"
FORMAT_BINARY = "binary"
FORMATS = (FORMAT_TEXT, FORMAT_BINARY)

# Built-in encodings
ENCODING_ASIS = "asis"
ENCODING_BASE64 = "base64"
ENCODING_PGP = "pgp"
ENCODING_GPG = "gpg"  # alias of pgp

DEFAULT_ENCODING = {
    FORMAT_TEXT: ENCODING_ASIS,
    FORMAT_BINARY: ENCODING_BASE64,
}

# Chunk option defaults
DEFAULT_LINE_SEP = "\n"
DEFAULT_MAX_ECHO = 20
DEFAULT_CHUNK_TYPE = "data"

# Encoded text is wrapped so chunks stay human-scannable
BASE64_LINE_WIDTH = 64

# Armor for pgp-encoded chunk bodies
ARMOR_BEGIN = "-----BEGIN DATACHUNK MESSAGE-----"
ARMOR_END = "-----END DATACHUNK MESSAGE-----"

# Encrypted message framing
MESSAGE_MAGIC = b"DCHK"
MESSAGE_VERSION = 1

SLOT_RSA = 1
SLOT_PASSPHRASE = 2
