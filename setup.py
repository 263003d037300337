from setuptools import setup, find_packages

setup(
    name="authguard",
    version="0.1.0",
    packages=find_packages(include=["authguard", "authguard.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "redis>=5.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "httpx>=0.27",
            "fakeredis[lua]>=2.21",
        ],
    },
)
