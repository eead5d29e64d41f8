from setuptools import setup, find_packages

setup(
    name="telemux",
    version="0.1.0",
    description="Multi-backend telemetry facade fanning logs, traces and segments out to pluggable drivers",
    packages=find_packages(include=["telemux", "telemux.*"]),
    install_requires=[
        "opentelemetry-api",  # For the OpenTelemetry driver
        "opentelemetry-sdk",
        "opentelemetry-exporter-otlp",
        "cloudevents>=1.6,<2",  # For structured log records
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "telemux=telemux.cli:main",
        ],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
