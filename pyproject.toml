[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sancho"
version = "0.1.0"
description = "A Discord chat bot with dice rolls, reminders, image filters and an operator console"
requires-python = ">=3.10"
keywords = ["discord", "bot", "chat", "dice", "reminders", "image-processing"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
    "Topic :: Games/Entertainment",
    "Topic :: Multimedia :: Graphics",
]
dependencies = [
    "pillow",
    "requests",
    "websocket-client",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
sancho = "sancho.bot:main"

[tool.hatch.build.targets.wheel]
packages = ["sancho"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]
