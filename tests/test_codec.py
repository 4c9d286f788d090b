"""Wire-level tests through pysparkplug's protobuf payloads."""

import pysparkplug
import pytest

from spb_edge.codec import BD_SEQ_METRIC, Message, SparkplugCodec
from spb_edge.controller import REBIRTH_METRIC, SessionController
from spb_edge.device import SimpleDevice
from spb_edge.errors import CodecError
from spb_edge.lifecycle import LifecycleState
from spb_edge.metrics import Int32, UInt64, encode
from spb_edge.topics import MessageKind

TS = 1706890000000


@pytest.fixture
def codec() -> SparkplugCodec:
    return SparkplugCodec()


class TestSparkplugCodec:
    def test_nbirth_round_trip(self, codec) -> None:
        metrics = (encode(BD_SEQ_METRIC, UInt64(3), TS), encode("temperatur", Int32(25), TS))

        raw = codec.encode(Message(MessageKind.NBIRTH, TS, 0, metrics))
        decoded = codec.decode(MessageKind.NBIRTH, raw)

        assert decoded.seq == 0
        assert decoded.timestamp == TS
        assert [m.name for m in decoded.metrics] == [BD_SEQ_METRIC, "temperatur"]
        assert decoded.metric(BD_SEQ_METRIC).value == 3
        assert decoded.metric("temperatur").value == 25

    def test_ddata_matches_pysparkplug(self, codec) -> None:
        metric = encode("humidity", 65.5, TS)

        raw = codec.encode(Message(MessageKind.DDATA, TS, 7, (metric,)))
        payload = pysparkplug.DData.decode(raw)

        assert payload.seq == 7
        assert payload.metrics[0].value == 65.5

    def test_ndeath_carries_bd_seq(self, codec) -> None:
        raw = codec.encode(Message(MessageKind.NDEATH, TS, None, (encode(BD_SEQ_METRIC, UInt64(5), TS),)))

        decoded = codec.decode(MessageKind.NDEATH, raw)

        assert decoded.metric(BD_SEQ_METRIC).value == 5

    def test_ndeath_without_bd_seq(self, codec) -> None:
        with pytest.raises(CodecError):
            codec.encode(Message(MessageKind.NDEATH, TS, None))

    def test_ddeath_carries_seq(self, codec) -> None:
        raw = codec.encode(Message(MessageKind.DDEATH, TS, 42))

        decoded = codec.decode(MessageKind.DDEATH, raw)

        assert decoded.seq == 42
        assert decoded.metrics == ()

    def test_data_metrics_carry_datatype(self, codec) -> None:
        raw = codec.encode(Message(MessageKind.DDATA, TS, 0, (encode("x", Int32(7), TS),)))

        payload = pysparkplug.DData.decode(raw)

        assert payload.metrics[0].datatype == pysparkplug.DataType.INT32
        assert payload.metrics[0].value == 7

    def test_ndeath_on_the_wire(self, codec) -> None:
        raw = codec.encode(Message(MessageKind.NDEATH, TS, None, (encode(BD_SEQ_METRIC, UInt64(9), TS),)))

        payload = pysparkplug.NDeath.decode(raw)

        assert payload.bd_seq_metric.name == BD_SEQ_METRIC
        assert payload.bd_seq_metric.datatype == pysparkplug.DataType.UINT64
        assert payload.bd_seq_metric.value == 9

    def test_decodes_ncmd_with_datatypes(self, codec) -> None:
        metric = pysparkplug.Metric(timestamp=TS, name=REBIRTH_METRIC, datatype=pysparkplug.DataType.BOOLEAN, value=True)
        raw = pysparkplug.NCmd(timestamp=TS, metrics=(metric,)).encode(include_dtypes=True)

        decoded = codec.decode(MessageKind.NCMD, raw)

        assert decoded.seq is None
        assert decoded.metric(REBIRTH_METRIC).value is True

    def test_ncmd_without_datatypes_uses_birth(self, codec) -> None:
        metric = pysparkplug.Metric(timestamp=TS, name=REBIRTH_METRIC, datatype=pysparkplug.DataType.BOOLEAN, value=True)
        raw = pysparkplug.NCmd(timestamp=TS, metrics=(metric,)).encode()
        birth = Message(
            MessageKind.NBIRTH,
            TS,
            0,
            (encode(BD_SEQ_METRIC, UInt64(0), TS), encode(REBIRTH_METRIC, False, TS)),
        )

        decoded = codec.decode(MessageKind.NCMD, raw, birth)

        assert decoded.metric(REBIRTH_METRIC).datatype == pysparkplug.DataType.BOOLEAN
        assert decoded.metric(REBIRTH_METRIC).value is True

    def test_ncmd_without_datatypes_or_birth(self, codec) -> None:
        metric = pysparkplug.Metric(timestamp=TS, name=REBIRTH_METRIC, datatype=pysparkplug.DataType.BOOLEAN, value=True)
        raw = pysparkplug.NCmd(timestamp=TS, metrics=(metric,)).encode()

        with pytest.raises(CodecError):
            codec.decode(MessageKind.NCMD, raw)

    def test_ncmd_naming_undeclared_metric(self, codec) -> None:
        metric = pysparkplug.Metric(timestamp=TS, name="Node Control/Scan", datatype=pysparkplug.DataType.BOOLEAN, value=True)
        raw = pysparkplug.NCmd(timestamp=TS, metrics=(metric,)).encode()
        birth = Message(MessageKind.NBIRTH, TS, 0, (encode(REBIRTH_METRIC, False, TS),))

        with pytest.raises(CodecError):
            codec.decode(MessageKind.NCMD, raw, birth)

    def test_garbage_raises_codec_error(self, codec) -> None:
        with pytest.raises(CodecError):
            codec.decode(MessageKind.NCMD, b"\x08")


class TestOnTheWire:
    def test_birth_and_rebirth_command(self, transport) -> None:
        controller = SessionController("G", "N", transport)
        controller.start()

        birth = pysparkplug.NBirth.decode(transport.published[0][1])
        assert birth.seq == 0
        assert [m.name for m in birth.metrics][:3] == [BD_SEQ_METRIC, REBIRTH_METRIC, "Node Control/Reboot"]

        metric = pysparkplug.Metric(timestamp=TS, name=REBIRTH_METRIC, datatype=pysparkplug.DataType.BOOLEAN, value=True)
        controller.on_inbound_command("spBv1.0/G/NCMD/N", pysparkplug.NCmd(timestamp=TS, metrics=(metric,)).encode())

        rebirth = pysparkplug.NBirth.decode(transport.published[1][1])
        assert rebirth.seq == 1
        assert rebirth.metrics[0].value == 1
        assert controller.state is LifecycleState.ONLINE

    def test_will_is_a_valid_ndeath(self, transport) -> None:
        controller = SessionController("G", "N", transport)
        controller.start()

        will = pysparkplug.NDeath.decode(transport.connects[0][4])

        assert will.bd_seq_metric.name == BD_SEQ_METRIC
        assert will.bd_seq_metric.value == 0

    def test_device_rebirth_command_without_datatypes(self, transport) -> None:
        controller = SessionController("G", "N", transport)
        controller.start()
        controller.attach_device(SimpleDevice("D1", {"temperatur": Int32(25)}))

        metric = pysparkplug.Metric(timestamp=TS, name=REBIRTH_METRIC, datatype=pysparkplug.DataType.BOOLEAN, value=True)
        controller.on_inbound_command("spBv1.0/G/DCMD/N/D1", pysparkplug.DCmd(timestamp=TS, metrics=(metric,)).encode())

        assert [topic for topic, _, _ in transport.published] == [
            "spBv1.0/G/NBIRTH/N",
            "spBv1.0/G/DBIRTH/N/D1",
            "spBv1.0/G/NBIRTH/N",
            "spBv1.0/G/DBIRTH/N/D1",
        ]
