"""Static league configuration constants."""

DOUBLES_SCORE_RANGE: tuple[int, int] = (-18, 18)
# Putts made at one station, 0 to 4, and the points each count is worth.
PUTTS_PER_STATION = 4
STATION_POINTS: tuple[int, ...] = (0, 1, 2, 3, 5)
MIN_STATIONS = 1
MAX_STATIONS = 10

MIN_TOTAL_ROUNDS = 1
MAX_TOTAL_ROUNDS = 5

MIN_DOUBLES_PLAYERS = 4
MIN_PUTTING_PLAYERS = 2

# Cards start on odd holes: 1, 3, 5, ... 17, then wrap.
START_SLOT_CYCLE = 18
START_SLOT_STEP = 2

PUTTING_CARD_SIZES: tuple[int, ...] = (2, 3, 4)
PUTTING_CARD_MIN = 2
PUTTING_CARD_MAX = 4

SEATED_GROUPS: tuple[str, ...] = ("A", "B")
PUTTING_POOLS: tuple[str, ...] = ("A", "B", "C")

DEFAULT_LEAGUE_ID = "default-league"
