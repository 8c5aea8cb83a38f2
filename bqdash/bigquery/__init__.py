API_VERSION = "v2"

INTEGER_TYPES = frozenset(["INTEGER", "INT64"])
FLOAT_TYPES = frozenset(["FLOAT", "FLOAT64", "NUMERIC", "BIGNUMERIC"])
NUMERIC_TYPES = INTEGER_TYPES | FLOAT_TYPES
RECORD_TYPES = frozenset(["RECORD", "STRUCT"])
