"""
Pipelines: Kubeflow Pipelines (KFP v2) component and pipeline definition.

The scheduled pipeline runs one sync pass per trigger.  Recurring runs are
created with ``max_concurrency=1`` so two passes never write the same
collections at once.
"""
