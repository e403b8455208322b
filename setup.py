from setuptools import setup, find_namespace_packages

setup(
    name="midday-devnet",
    version="0.2.0",
    packages=find_namespace_packages(where="src", include=["midday_devnet*"]),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0",
        "pyyaml>=6.0",
        "click>=8.0",
        "tenacity>=8.3",
        "python-dotenv>=1.0",
        "docker>=7.0",
        "requests>=2.31",
        "httpx>=0.24",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "devnet=midday_devnet.CLI.main:main",
        ],
    },
)
