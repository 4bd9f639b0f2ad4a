[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mcportscan"
version = "0.1.0"
description = "Asynchronous scanner that finds Minecraft servers and reports them to Discord webhooks"
requires-python = ">=3.11"
keywords = ["minecraft", "scanner", "server list ping", "asyncio", "discord"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
]
dependencies = [
    "aiohttp>=3.9",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
mcportscan = "mcportscan.scanner:main"

[tool.hatch.build.targets.wheel]
packages = ["mcportscan"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]
