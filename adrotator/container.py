from adrotator.services.delivery_service import TelegramDeliveryService
from adrotator.services.payment_client import CoinPaymentClient
from adrotator.services.payment_worker_service import PaymentWorkerService
from adrotator.services.queue_store import QueueStore
from adrotator.services.registration_service import RegistrationService
from adrotator.services.round_scheduler_service import RoundSchedulerService


queue_store = QueueStore()
payment_client = CoinPaymentClient()
delivery_service = TelegramDeliveryService()
registration_service = RegistrationService(queue_store, delivery_service)
scheduler_service = RoundSchedulerService(queue_store)
payment_worker_service = PaymentWorkerService(queue_store, payment_client, delivery_service)
