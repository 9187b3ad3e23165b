import pytest
from gbsdk.growthbook import feature_repo

@pytest.fixture(autouse=True)
def reset_feature_repo():
    """Clear the shared FeatureRepository cache between tests"""
    yield
    feature_repo.clear_cache()
