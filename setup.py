from setuptools import setup, find_packages

setup(
    name="adherence-sync-pipeline",
    version="1.0.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "pandas>=2.1.0",
        "sqlalchemy>=2.0.19",
        "psycopg2-binary>=2.9.6",
        "python-dotenv>=1.0.0",
        "requests>=2.31.0",
        "click>=8.1.0",
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
        "pydantic>=2.5.0",
        "streamlit>=1.31.0",
        "plotly>=5.18.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "httpx>=0.26.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "adherence-sync=adherence_sync.scripts.cli:main",
        ],
    },
    python_requires=">=3.10",
)
