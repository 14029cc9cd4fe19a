GRID_SIZE = 3
LETTERS = ("c", "h", "k", "l", "q", "r", "s", "t")

BASE_TRIALS = 20
MIN_N = 1
MAX_N = 9

TRIAL_MS = 3000
BREAK_MS = 100

MATCH_RATE = 0.30
BOTH_RATE = 0.10
MAX_BOTH_MATCHES = 2
MAX_ATTEMPTS = 1000

# Per-trial chances borrowed from brainworkshop's defaults.
CHANCE_OF_GUARANTEED_MATCH = 0.125
CHANCE_OF_INTERFERENCE = 0.125

# Letter tones
TONE_MS = 400
TONE_FADE_MS = 15
TONE_VOLUME = 0.5
