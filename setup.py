"""Setup script for ballerina-mcp-server."""

from setuptools import setup, find_packages

setup(
    name="ballerina-mcp-server",
    version="0.1.0",
    description="MCP server exposing Ballerina project tools, resources and prompts",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    python_requires=">=3.10",
    install_requires=[
        "jsonschema>=4.0.0",
        "python-dotenv>=1.0.0",
        "starlette>=0.27.0",
        "uvicorn>=0.29.0",
        "websockets>=12.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "ballerina-mcp=ballerina_mcp.__main__:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
