import logging
import os

import joblib

from titanic_survival.config import MODELS_DIR, PROC_DIR
from titanic_survival.features.pipeline import engineer_features
from titanic_survival.stages.sample import load_data

logger = logging.getLogger(__name__)


def main(proc_dir=PROC_DIR, models_dir=MODELS_DIR):
    corpus, demo = load_data()
    fs = engineer_features(corpus)
    os.makedirs(proc_dir, exist_ok=True)
    os.makedirs(models_dir, exist_ok=True)
    fs.X_train.assign(**{fs.y_train.name: fs.y_train}).to_csv(f"{proc_dir}/train_treated.csv", index=False)
    fs.X_test.to_csv(f"{proc_dir}/test_treated.csv", index=False)
    fs.plan.score_frame.to_csv(f"{proc_dir}/score_frame.csv", index=False)
    joblib.dump({"fare_transform": fs.fare_transform, "age_model": fs.age_model, "plan": fs.plan},
                f"{models_dir}/feature_state.joblib")
    logger.info("Modify complete (demo=%s): %d variables kept", demo, len(fs.selected))
    return fs


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    main()
