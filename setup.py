from setuptools import setup, find_packages

setup(
    name="awstools",
    version="0.1.0",
    description="Resilient AWS CLI execution engine: layered config, auth/region detection, retries and rate limiting",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "botocore>=1.31.0",
        "pydantic>=2.0.0",
        "python-dotenv>=1.0.0",
        "structlog>=23.1.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": ["awstools = awstools.cli:run"],
    },
)
