'''
ML Engine Test Suite

Test Modules:
-------------
- test_numeric.py: Standardization, activations, distances, impurity, percentiles
- test_feature_builder.py: Log parsing, per-user features, percentile targets, matrix checks
- test_persona_features.py: Log cleaning and persona signal aggregation
- test_evaluation.py: Confusion matrix, macro metrics, log-loss, MCC
- test_trainer.py: Logistic regression, decision tree, split and importance
- test_predictor.py: Prediction with explicit model handles, persistence
- test_clustering.py: K-Means++, restarts, silhouette, elbow, persona matching
- test_diagnosis.py: Feature verdicts, combos, profiles, recommendations
- test_api.py: FastAPI endpoints via TestClient
'''
