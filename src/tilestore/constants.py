# Key quantization: number of decimal places kept per coordinate.
# Codec and region indexer must read the same value (see StoreConfig).
KEY_PRECISION = 3

# Edge length of a region cube, in world units.
REGION_SIZE = 16.0

# Instance slots per chunk.
CHUNK_CAPACITY = 1000

# Occupancy ratio at which a chunk is reported as nearly full.
NEARLY_FULL_THRESHOLD = 0.95

# Batch operations (area fill / erase).
MAX_BATCH_TILES = 10000
BATCH_STEP_SIZE = 250
BATCH_MIN_INTERVAL = 0.016  # seconds between incremental steps (~one frame at 60Hz)

# Key layout: orientation in the low bits, then z, y, x as biased integers.
ORIENTATION_BITS = 5
AXIS_BITS = 32

# Per-field byte costs of the columnar layout, used for storage estimates.
POSITION_BYTES = 12          # 3 x float32
PACKED_STATE_BYTES = 4       # orientation | mesh mode | flags
TRANSFORM_INDEX_BYTES = 4    # int32, -1 when no override
TRANSFORM_OVERRIDE_BYTES = 36  # 9 x float32 (offset, scale, rotation)
