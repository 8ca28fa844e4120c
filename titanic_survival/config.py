"""
Constants shared by the feature pipeline, the model selector and the stage
scripts: column names, variable lists, resampling settings and output paths.
"""

SEED = 42

# --- Columns ---
ID_COL = "PassengerId"
TARGET = "Survived"
TARGET_POSITIVE = 1
# Internal class names the models predict, and the labels they map back to.
OUTCOME_CLASSES = ("perished", "survived")
OUTCOME_LABELS = {"perished": 0, "survived": 1}

PARTITION_COL = "Partition"
TRAIN_TAG = "train"
TEST_TAG = "test"

RAW_COLUMNS = ["Pclass", "Name", "Sex", "Age", "SibSp", "Parch", "Ticket", "Fare", "Cabin", "Embarked"]
TOP_CLASS = 1

# --- Imputation ---
GROUP_MEAN_KEY = ("Title", "Master")
IMPUTATION_TARGET = "Age"
IMPUTATION_PREDICTORS = ["Pclass", "Sex", "SibSp", "Parch", "FareTransformed", "Embarked", "Title"]
IMPUTATION_ROUNDS = 5

# --- Treatment plan ---
CATEGORICAL_VARS = ["Pclass", "Sex", "Embarked", "Title", "FamilySizeBucket", "CabinDeck", "TicketType"]
NUMERIC_VARS = ["AgeImputed", "AgeMissing", "FareTransformed"]
TREATMENT_FOLDS = 5
MIN_LEVEL_FRACTION = 0.02

# --- Model selection ---
CV_FOLDS = 5
CV_REPEATS = 3
SMOTE_NEIGHBORS = 5
N_JOBS = -1
SELECTION_METRIC = "roc_auc"
TIE_BREAK_METRIC = "specificity"

# --- Paths ---
RAW_DIR = "data/raw"
PROC_DIR = "data/processed"
REPORTS_DIR = "reports"
MODELS_DIR = "models"
