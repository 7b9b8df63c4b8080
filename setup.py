from setuptools import setup, find_packages

setup(
    name="qcm-attempt-engine",
    version="1.0.0",
    description="Randomized multiple-choice quiz attempts with autosave, time limits and scoring",
    packages=find_packages(exclude=["qcm.tests", "qcm.tests.*"]),
    install_requires=[
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "sqlalchemy[asyncio]>=2.0.0",
        "aiosqlite>=0.19.0",
        "python-dotenv>=0.19.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    python_requires=">=3.9",
)
