from setuptools import setup, find_packages

with open("requirements.txt") as f:
    required = f.read().splitlines()

setup(
    name="chat-transcripts",
    version="0.0.1",
    package_dir={"": "src"},
    packages=find_packages("src"),
    python_requires=">=3.10",
    install_requires=required,
    extras_require={"test": ["pytest", "pytest-asyncio"]},
    description="Deterministic offline transcripts for chat message histories",
)
