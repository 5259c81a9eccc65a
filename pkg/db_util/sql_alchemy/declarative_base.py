from sqlalchemy.orm import declarative_base

# Shared metadata for every table in the service
Base = declarative_base()
