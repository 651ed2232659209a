# =============================================================================
# Configuration Models Module
# =============================================================================
# Provides the Pydantic Settings model for MongoDB connection configuration:
# - MongoSettings: MongoDB operational store configuration
# =============================================================================

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

__all__ = [
    "MongoSettings",
]


# =============================================================================
# MongoDB Settings (Operational Record Store)
# =============================================================================

class MongoSettings(BaseSettings):
    """
    Configuration for MongoDB (operational record store and task ledger).

    Maps environment variables with prefix "MONGO_":
    - MONGO_HOST → host
    - MONGO_PORT → port
    - MONGO_INITDB_ROOT_USERNAME → username
    - MONGO_INITDB_ROOT_PASSWORD → password
    - MONGO_DATABASE → database
    - MONGO_AUTH_SOURCE → auth_source

    Change streams require a replica set; ``replica_set`` is appended to the
    connection string when set.
    """

    host: str = Field("mongodb", validation_alias="MONGO_HOST", description="MongoDB host")
    port: int = Field(27017, validation_alias="MONGO_PORT", description="MongoDB port")
    username: str = Field(..., validation_alias="MONGO_INITDB_ROOT_USERNAME", description="MongoDB username (maps from MONGO_INITDB_ROOT_USERNAME)")
    password: str = Field(..., validation_alias="MONGO_INITDB_ROOT_PASSWORD", description="MongoDB password (maps from MONGO_INITDB_ROOT_PASSWORD)")
    database: str = Field("data_lake", validation_alias="MONGO_DATABASE", description="Database name")
    auth_source: str = Field("admin", validation_alias="MONGO_AUTH_SOURCE", description="Authentication source")
    replica_set: str | None = Field(None, validation_alias="MONGO_REPLICA_SET", description="Replica set name (required for change streams)")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Ignore unrelated env vars from shared .env files
    )

    @property
    def connection_string(self) -> str:
        """
        Build MongoDB connection URI.

        Format: mongodb://[username]:[password]@[host]:[port]/[database]?authSource=[auth_source][&replicaSet=[replica_set]]

        Returns:
            MongoDB connection URI string
        """
        uri = (
            f"mongodb://{self.username}:{self.password}@"
            f"{self.host}:{self.port}/{self.database}?authSource={self.auth_source}"
        )
        if self.replica_set:
            uri += f"&replicaSet={self.replica_set}"
        return uri

