"""Setup script for the library association membership system."""

from setuptools import setup, find_packages

TEST_REQUIREMENTS = [
    "pytest>=7.4.0",
    "pytest-asyncio>=0.23.0",
    "pytest-mock>=3.12.0",
    "respx>=0.21.0",
    "aiosqlite>=0.19.0",
]

setup(
    name="membership_system",
    version="0.1.0",
    description=(
        "Membership backend for a library association: registration, Midtrans payments, "
        "webhook reconciliation, PDF documents and WhatsApp notifications"
    ),
    author="ML Roadmap Bootcamp",
    python_requires=">=3.10",
    packages=find_packages(include=["membership_system", "membership_system.*"]),
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#") and not line.startswith("git+")
    ],
    extras_require={
        "test": TEST_REQUIREMENTS,
        "dev": TEST_REQUIREMENTS
        + [
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "membership-admin=membership_system.cli:app",
        ]
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Framework :: FastAPI",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
