"""Integration tests against a real Aurora DSQL cluster.

Skipped unless DSQLKIT_TEST_CLUSTER_ENDPOINT and AWS_REGION are set.

Test modules:
- test_dsql_cluster.py: token auth, concurrent bootstrap, migrations
"""
