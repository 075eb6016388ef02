from django.apps import AppConfig
from django.conf import settings


class DICoreConfig(AppConfig):
    name = "di_core"

    def ready(self) -> None:
        from di_core import containers

        container = containers.AppContainer()
        container.config.from_dict(
            {name: getattr(settings, name) for name in dir(settings) if name.isupper()}
        )

        # Wires @inject markers in views, serializers and services of the project apps
        container.wire(
            packages=[
                app for app in getattr(settings, "INTERNAL_INSTALLED_APPS", []) if app != "di_core"
            ],
        )

        containers.container = container
