"""Setup configuration for Guardcord Discord Bot."""

from setuptools import setup, find_packages

setup(
    name="guardcord",
    version="0.0.1",
    description="A Discord anti-nuke bot that stops mass kicks, bans and creation bursts",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "py-cord>=2.4",
        "python-dotenv",
        "PyYAML",
        "prompt_toolkit",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "guardcord=guardcord.main:main",
        ],
    },
)
