# Standard library imports
import copy
import json
import os
import typing

# Third-party imports
import cachetools

SETTINGS_JSON = os.getenv("TRACKER_SETTINGS", "settings.json")
SETTINGS_CACHE = cachetools.TTLCache(maxsize=4, ttl=10)

DEFAULT_SETTINGS = {
    "SERVER": {
        "HOST": "0.0.0.0",
        "PORT": 3000,
        "DEBUG": False,
        "MAX_EVENTS": 100,
        "INITIAL_ACTIVE_USERS": 1,
    }
}


class JsonFileHandler:
    """JSON document on disk, cached in memory for a short TTL and written atomically."""

    def __init__(self, file_path: str, cache: cachetools.TTLCache, default_data: typing.Any):
        self.file_path = file_path
        self.cache = cache
        self.default_data = default_data

    def exists(self) -> bool:
        return os.path.exists(self.file_path) and os.path.getsize(self.file_path) > 0

    def read(self) -> typing.Any:
        if self.file_path in self.cache:
            return self.cache[self.file_path]

        if not self.exists():
            return copy.deepcopy(self.default_data)

        with open(self.file_path, "r") as file:
            data = json.load(file)
        self.cache[self.file_path] = data
        return data

    def write(self, data: typing.Any) -> None:
        temp_file = f"{self.file_path}.tmp"
        with open(temp_file, "w") as file:
            json.dump(data, file, indent=2)
        os.replace(temp_file, self.file_path)
        self.cache[self.file_path] = data

    def initialize(self) -> None:
        if not self.exists():
            self.write(self.default_data)


settings_handler = JsonFileHandler(SETTINGS_JSON, SETTINGS_CACHE, DEFAULT_SETTINGS)


def load_server_settings(handler: typing.Optional[JsonFileHandler] = None) -> typing.Dict:
    """
    Resolve the server section of the settings file, filling gaps from the defaults.

    The HOST and PORT environment variables win over the file.
    """
    handler = handler or settings_handler
    server = dict(DEFAULT_SETTINGS["SERVER"])
    server.update(handler.read().get("SERVER", {}))

    if os.getenv("HOST"):
        server["HOST"] = os.getenv("HOST")
    if os.getenv("PORT"):
        server["PORT"] = int(os.getenv("PORT"))
    return server
