"""Setup configuration for KV Gateway."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="kv-gateway",
    version="1.0.0",
    description="HTTP gateway with validated CRUD and batch operations over multi-namespace KV stores",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="KV Gateway Team",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
        "httpx>=0.27.0",
        "pydantic>=2.0.0",
        "python-dotenv",
        "opentelemetry-api>=1.20.0",
        "opentelemetry-sdk>=1.20.0",
        "prometheus-client>=0.18.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "pytest-cov>=4.1.0",
        ],
        "aws": [
            "boto3",
        ],
    },
    entry_points={
        "console_scripts": [
            "kv-gateway=kv_gateway.__main__:main",
        ],
    },
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: Developers",
        "Topic :: Database",
        "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
