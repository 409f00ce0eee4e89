"""Billing RPC messages and gRPC bindings.

The message classes are built from a descriptor equivalent to
``billing.proto`` so no ``protoc`` step is needed at install time. The wire
format and method path (``/BillingService/CreateBillingAccount``) match code
generated from that file.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

import grpc
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

SERVICE_NAME = "BillingService"
CREATE_BILLING_ACCOUNT = "CreateBillingAccount"
CREATE_BILLING_ACCOUNT_PATH = f"/{SERVICE_NAME}/{CREATE_BILLING_ACCOUNT}"

_STRING = descriptor_pb2.FieldDescriptorProto.TYPE_STRING
_OPTIONAL = descriptor_pb2.FieldDescriptorProto.LABEL_OPTIONAL

_MESSAGES: dict[str, tuple[str, ...]] = {
    "BillingRequest": ("patientId", "name", "email"),
    "BillingResponse": ("accountId", "status"),
}


def _file_descriptor_proto() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="billing.proto", syntax="proto3"
    )
    file_proto.options.java_multiple_files = True
    file_proto.options.java_package = "billing"

    for message_name, field_names in _MESSAGES.items():
        message = file_proto.message_type.add(name=message_name)
        for number, field_name in enumerate(field_names, start=1):
            message.field.add(
                name=field_name,
                json_name=field_name,
                number=number,
                type=_STRING,
                label=_OPTIONAL,
            )

    service = file_proto.service.add(name=SERVICE_NAME)
    service.method.add(
        name=CREATE_BILLING_ACCOUNT,
        input_type=".BillingRequest",
        output_type=".BillingResponse",
    )
    return file_proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_file_descriptor_proto().SerializeToString())

BillingRequest: Any = message_factory.GetMessageClass(
    _POOL.FindMessageTypeByName("BillingRequest")
)
BillingResponse: Any = message_factory.GetMessageClass(
    _POOL.FindMessageTypeByName("BillingResponse")
)


class BillingServiceServicer:
    """Server-side interface for the billing RPC."""

    async def CreateBillingAccount(  # noqa: N802 - RPC method name
        self, request: Any, context: grpc.aio.ServicerContext
    ) -> Any:
        await context.abort(grpc.StatusCode.UNIMPLEMENTED, "Method not implemented")


def add_billing_servicer_to_server(
    servicer: BillingServiceServicer, server: grpc.aio.Server
) -> None:
    """Register ``servicer`` on ``server`` under the ``BillingService`` name."""

    handler: Callable[[Any, grpc.aio.ServicerContext], Awaitable[Any]] = (
        servicer.CreateBillingAccount
    )
    server.add_generic_rpc_handlers(
        (
            grpc.method_handlers_generic_handler(
                SERVICE_NAME,
                {
                    CREATE_BILLING_ACCOUNT: grpc.unary_unary_rpc_method_handler(
                        handler,
                        request_deserializer=BillingRequest.FromString,
                        response_serializer=BillingResponse.SerializeToString,
                    )
                },
            ),
        )
    )


class BillingServiceStub:
    """Client-side callable for the billing RPC on a ``grpc.aio`` channel."""

    def __init__(self, channel: grpc.aio.Channel) -> None:
        self.CreateBillingAccount = channel.unary_unary(
            CREATE_BILLING_ACCOUNT_PATH,
            request_serializer=BillingRequest.SerializeToString,
            response_deserializer=BillingResponse.FromString,
        )


__all__ = [
    "BillingRequest",
    "BillingResponse",
    "BillingServiceServicer",
    "BillingServiceStub",
    "CREATE_BILLING_ACCOUNT_PATH",
    "add_billing_servicer_to_server",
]
