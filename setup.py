"""
Setup script for the pulse-bridge service
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="pulse-bridge",
    version="1.0.0",
    author="YuDev",
    description="SNS/SQS to Pulse event bus bridge for shipment events",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=[
        "fastapi>=0.104.0",
        "uvicorn[standard]>=0.24.0",
        "httpx>=0.25.0",
        "pydantic>=2.5.0",
        "pyyaml>=6.0",
        "redis[hiredis]>=5.0.1",
        "boto3>=1.28.0",
        "PyJWT>=2.8.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "moto[sqs,sns,s3]>=5.0.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "pulse-bridge=pulse_bridge.app:main",
        ]
    },
    include_package_data=True,
    zip_safe=False,
)
