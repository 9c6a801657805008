WINDOW_SIZE = 2048
BAND_COUNT = 64

MIN_BAND_FREQ_HZ = 20.0
BAND_WIDTH_RATIO = 1.2
DB_GAIN = 1.2
POWER_EPSILON = 1e-10

OUTPUT_SAMPLE_RATE = 48000
OUTPUT_CHANNELS = 2

RENDER_TIMEOUT_SEC = 120.0
RENDER_POLL_INTERVAL_SEC = 0.005
# 20 ms frames at the output rate.
RENDER_FRAME_DURATION_MS = 20
RENDER_QUEUE_MAX_FRAMES = 50
