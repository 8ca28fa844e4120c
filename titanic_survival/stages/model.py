import logging
import os

import joblib

from titanic_survival.config import MODELS_DIR, REPORTS_DIR
from titanic_survival.features.pipeline import engineer_features
from titanic_survival.models.predict import predict, submission_frame
from titanic_survival.models.select import (best_model, compare_models, paired_differences, resamples, train_all,
                                            variable_importance)
from titanic_survival.stages.sample import load_data

logger = logging.getLogger(__name__)


def main(families=None, reports_dir=REPORTS_DIR, models_dir=MODELS_DIR, **cv_kwargs):
    """Select a model on the training partition and label the test partition."""
    corpus, demo = load_data()
    fs = engineer_features(corpus)
    result = train_all(fs.X_train, fs.y_train, families=families, **cv_kwargs)
    ranking = compare_models(result)

    os.makedirs(reports_dir, exist_ok=True)
    os.makedirs(models_dir, exist_ok=True)
    ranking.to_csv(f"{reports_dir}/model_ranking.csv", index=False)
    resamples(result).to_csv(f"{reports_dir}/resamples.csv", index=False)
    paired_differences(result).to_csv(f"{reports_dir}/paired_differences.csv", index=False)
    for name, reason in result.failures.items():
        logger.warning("Family %s failed: %s", name, reason)

    best = best_model(result)
    variable_importance(best, fs.X_train, fs.y_train).to_csv(f"{reports_dir}/variable_importance.csv", index=False)
    joblib.dump(best.pipeline, f"{models_dir}/{best.name}.joblib")
    logger.info("Model complete (demo=%s). Best: %s", demo, best.name)
    return submission_frame(fs.test_ids, predict(best, fs.X_test))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    main()
