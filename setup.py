from setuptools import setup

setup(
    name="browser-threat-engine",
    version="0.1.0",
    description="Client-side threat detection engine for URLs, scripts, page behavior and browser extensions",
    author="debarshi17",
    author_email="your-email@example.com",
    url="https://github.com/debarshi17/browser-threat-engine",
    package_dir={"": "src"},
    py_modules=[
        "analyzer",
        "anomaly_dispatcher",
        "behavior_baseline",
        "collaborators",
        "engine",
        "engine_config",
        "errors",
        "extension_scanner",
        "feature_extractor",
        "interception_guard",
        "log_config",
        "ml_signal",
        "pattern_catalog",
        "profile_store",
        "script_blocker",
        "threat_db",
        "threat_models",
        "url_analyzer",
        "url_patterns",
        "utils",
    ],
    install_requires=[
        "requests>=2.31.0",
        "beautifulsoup4>=4.12.2",
        "pyyaml>=6.0.1",
        "fastapi>=0.109.0",
        "uvicorn>=0.27.0",
        "pydantic>=2.5.0",
        "tqdm>=4.66.1",
        "colorama>=0.4.6",
        "python-dotenv>=1.0.0",
        "esprima>=4.0.1",
        "loguru>=0.7.2",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "httpx>=0.26.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "threat-engine=analyzer:main",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Security",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.9",
    ],
)
