from rest_framework import mixins, status
from rest_framework.response import Response
from rest_framework.viewsets import ModelViewSet


class RefetchReturnInstanceAfterWriteMixin:
    def get_serializer_class(self):
        """
        Return the class to use for the serializer.
        Defaults to `read_serializer_class` for reads and `write_serializer_class`
        (or the per-action create/update serializer) for writes.
        """
        assert (  # noqa: S101
            self.serializer_class is not None
            or getattr(self, "read_serializer_class", None) is not None
        ), (
            f"'{self.__class__.__name__}' should either include one of `serializer_class` and "
            f"`read_serializer_class` attribute, or override `get_serializer_class()`."
        )

        if self.action == "create":
            return self.get_create_serializer_class()
        if self.action in ("update", "partial_update"):
            return self.get_update_serializer_class()
        return self.get_read_serializer_class()

    def get_read_serializer_class(self):
        return getattr(self, "read_serializer_class", None) or self.serializer_class

    def get_write_serializer_class(self):
        return getattr(self, "write_serializer_class", None) or self.get_read_serializer_class()

    def get_create_serializer_class(self):
        return getattr(self, "create_serializer_class", None) or self.get_write_serializer_class()

    def get_update_serializer_class(self):
        return getattr(self, "update_serializer_class", None) or self.get_write_serializer_class()

    def get_read_serializer(self, *args, **kwargs):
        """
        Return the serializer instance that should be used for serializing output.
        """
        serializer_class = self.get_read_serializer_class()
        kwargs["context"] = self.get_serializer_context()
        return serializer_class(*args, **kwargs)


class CreateModelMixin(RefetchReturnInstanceAfterWriteMixin, mixins.CreateModelMixin):
    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        self.perform_create(serializer)
        instance = serializer.instance

        # re-fetches the instance so we get the related rows selected by get_queryset
        annotated_instance = self.get_queryset().get(pk=instance.pk)
        return_serializer = self.get_read_serializer(annotated_instance)
        headers = self.get_success_headers(return_serializer.data)
        return Response(return_serializer.data, status=status.HTTP_201_CREATED, headers=headers)


class UpdateModelMixin(RefetchReturnInstanceAfterWriteMixin, mixins.UpdateModelMixin):
    def update(self, request, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        instance = self.get_object()
        serializer = self.get_serializer(instance, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        self.perform_update(serializer)

        return_serializer = self.get_read_serializer(
            self.get_queryset().get(pk=serializer.instance.pk)
        )
        return Response(return_serializer.data)


class FilterOnlyOnListMixin:
    def filter_queryset(self, queryset):
        if self.action != "list":
            return queryset
        return super().filter_queryset(queryset)


class OrganizationModelViewSet(
    CreateModelMixin,
    UpdateModelMixin,
    FilterOnlyOnListMixin,
    ModelViewSet,
):
    """
    A viewset that provides default `create()`, `retrieve()`, `update()`,
    `partial_update()`, `destroy()` and `list()` actions for organization models.
    It refetches the instance after write operations to ensure the latest data is returned.
    """

    pass
