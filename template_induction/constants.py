from enum import Enum

# Numerical constants
DIST_TOLERANCE = 1e-5

# Entity semantic types
class EntityType(Enum):
    PERSON = 0
    ORGANIZATION = 1
    LOCATION = 2
    TIME = 3
    EVENT = 4
    PHYSOBJECT = 5
    OTHER = 6


STR_TO_ENTITY_TYPE = {t.name: t for t in EntityType}
N_ENTITY_TYPES = len(EntityType)

# Default Dirichlet smoothing
TOPIC_SMOOTHING = 0.1
JUNK_TOPIC_SMOOTHING = 20.0
TOKEN_SMOOTHING = 3.0
DEP_SMOOTHING = 0.1
VERB_SMOOTHING = 0.1
FEAT_SMOOTHING = 1.0

# Dependency relations that have an inverse (subject <-> object)
DEP_SEPARATOR = "--"
SUBJECT_DEP = "nsubj"
OBJECT_DEP = "dobj"

# Inverse-dependency soft constraint
INVERSE_DEP_WARMUP = 50
INVERSE_DEP_MARGIN = 0.03
INVERSE_DEP_PENALTY = 1e-4

# Sampler convergence bookkeeping
CHECK_INTERVAL = 15
STABLE_MIN_STEP = 1000
STABLE_LIKELIHOOD_DELTA = 20.0
REGRESSION_MIN_STEP = 400
REGRESSION_STEPS_AGO = 1000
REGRESSION_FRACTION_AGO = 0.4

# Inference
MIN_ACCEPTABLE_PROBABILITY = 0.95
MAX_ENTITIES_PER_ROLE = 3
SAMPLED_LABEL_CUTOFF = 0.1
TOP_VERBS_PER_TOPIC = 2
TOP_VERB_MIN_PROB = 0.05

# Slot alignment search
MIN_PAIR_F1 = 0.003
MIN_SINGLE_ROLE_F1 = 0.01
TRIM_TOLERANCE = 0.001
MAX_PERMUTATIONS = 200000

# Fuzzy string matching
LONG_STRING_LENGTH = 15
LONG_STRING_LENGTH_DIFF = 5
EDIT_DISTANCE_DIVISOR = 6

PRONOUNS = set(
    "i me my mine myself you your yours yourself yourselves he him his himself "
    "she her hers herself it its itself we us our ours ourselves they them their "
    "theirs themselves this that these those who whom whose which what one "
    "someone anyone everyone somebody".split()
)
