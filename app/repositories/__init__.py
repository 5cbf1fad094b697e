from app.repositories.users import UserRepository, SqlAlchemyUserRepository

__all__ = ["UserRepository", "SqlAlchemyUserRepository"]
