from setuptools import setup, find_packages

setup(
    name="reminder-service",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "fastapi",
        "uvicorn",
        "sqlalchemy",
        "pydantic",
        "pydantic-settings",
        "python-dotenv",
        "kombu",
        "prometheus-client",
        "prometheus-fastapi-instrumentator",
        "pywebpush",
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx",
        ],
    },
)
