"""awstools - resilient execution engine for the AWS CLI."""

__version__ = "0.1.0"
