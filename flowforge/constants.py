"""Default values shared across flowforge modules."""

DEFAULT_MAX_PARALLEL_OPERATIONS = 5
DEFAULT_MAX_EXECUTION_TIME_MS = 30000
DEFAULT_MAX_TOTAL_COST = 20.0
DEFAULT_MIN_RELIABILITY = 0.6

DEFAULT_HISTORY_TTL_SECONDS = 3600
DEFAULT_HISTORY_LIMIT = 1000

DP_MAX_STEPS = 8

GENETIC_POPULATION_SIZE = 10
GENETIC_GENERATIONS = 5
GENETIC_MUTATION_RATE = 0.1

# Normalisation ceilings used by the genetic fitness function
FITNESS_TIME_CEILING_MS = 30000.0
FITNESS_COST_CEILING = 20.0
