from .main import Services, build_services, create_app, get_services

__all__ = ['Services', 'build_services', 'create_app', 'get_services']
