from setuptools import setup, find_packages

setup(
    name="switchyard",
    version="0.3.0",
    packages=find_packages(include=["switchyard", "switchyard.*"]),
    install_requires=[
        "openai>=1.0.0",
        "httpx>=0.25.0",
        "python-dotenv>=1.0.0",
        "click>=8.1.0",
        "rich>=13.0.0",
        "pydantic>=2.0.0",
        "azure-identity>=1.12.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "hypothesis>=6.90.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "switchyard=switchyard.cli.main:main",
        ]
    },
    description="Resilient multi-provider LLM call orchestration with health tracking, circuit breakers and fallback.",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    license="MIT",
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
